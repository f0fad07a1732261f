"""Relay 可选模型配置。

本模块将“界面上的模型名”与“Relay 实际转发的模型名”解耦：

- logical_name：会话里保存、界面上选择的名称，例如 "gpt-4o-mini"。
- provider_model：Relay 转发给厂商的模型 ID。

目前两者相同，保留映射是为了以后升级模型时不用迁移历史会话。"""

from dataclasses import dataclass
from typing import Dict, List, Mapping

from chat_core.domain.exceptions import ValidationError


@dataclass
class ModelConfig:
    """单个可选模型的配置。"""

    logical_name: str
    provider_model: str
    label: str


MODEL_REGISTRY: Mapping[str, ModelConfig] = {
    "gpt-4o-mini": ModelConfig(
        logical_name="gpt-4o-mini",
        provider_model="gpt-4o-mini",
        label="GPT-4o Mini",
    ),
    "gpt-4o": ModelConfig(
        logical_name="gpt-4o",
        provider_model="gpt-4o",
        label="GPT-4o",
    ),
}


def get_model_config(name: str) -> ModelConfig:
    """根据名称获取 ModelConfig，名称不区分大小写。"""

    key = (name or "").lower()
    for k, cfg in MODEL_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise ValidationError(code="UNKNOWN_MODEL", message=f"Unknown model: {name!r}")


def list_models() -> List[Dict[str, str]]:
    return [{"value": cfg.logical_name, "label": cfg.label} for cfg in MODEL_REGISTRY.values()]
