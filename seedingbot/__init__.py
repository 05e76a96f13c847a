"""Building blocks for a football chat-room seeding bot: feed mapping, LLM replies, SQL storage and MQTT delivery."""

__version__ = "0.1.0"