"""Users, conversations and messages.

Usage:
    from chat_service.features.chat.gateway import SqlChatGateway
    from chat_service.features.chat.service import ChatService

    gateway = SqlChatGateway(get_session_factory())
    service = ChatService(gateway, hub)
"""
