"""领域层模型与协议。

包含：
- models: Role / Message / Conversation / ContentDelta 等统一模型。
- conversation: RecordStore 与 SessionProvider 协议。
- exceptions: 业务异常类型定义。
"""
