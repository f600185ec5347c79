"""
Chat app for order conversations.

Related apps:
    - orders: each Order owns one Conversation
    - payments: posts system messages on settlement transitions
"""
