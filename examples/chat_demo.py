"""Minimal terminal chat against the configured relay."""

import os
import sys

from chat_core.api.service import build_default_session
from chat_core.domain.models import User
from chat_core.infrastructure.auth.static_session import StaticSessionProvider


def print_delta(state):
    if state.messages and state.messages[-1].role.value == "assistant":
        sys.stdout.write("\r" + state.messages[-1].content)
        sys.stdout.flush()


if __name__ == "__main__":
    provider = StaticSessionProvider(User(id=os.getenv("CHAT_USER_ID", "demo-user")), os.getenv("CHAT_ACCESS_TOKEN"))
    session = build_default_session(provider, notify=lambda title, desc: print(f"\n[{title}] {desc}"))
    session.container.subscribe(print_delta)
    session.create_conversation()
    question = "用三句话介绍一下 Server-Sent Events"
    print("User:", question)
    session.send_message(question)
    print()
