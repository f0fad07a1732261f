"""持久化服务：消息与会话。"""
