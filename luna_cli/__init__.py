"""
Luna CLI - configuration and the conversation log utility.

Modules:
- config: LUNA_HOME, .env and config.yaml resolution into AgentSettings
- conversations: list / show / clean / delete conversation logs
"""
