"""
Conversation state machine - sessions, intents, booking / cancel flows and the dispatcher
"""
