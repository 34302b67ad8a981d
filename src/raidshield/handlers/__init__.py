"""
Event handlers for the detection engine.

Contains:
- antispam: Message-rate and voice-abuse detection with escalation
- automod: Content checks (profanity, caps, mentions, ...)
- linkfilter: Checks for explicitly submitted links
- antiraid: Join screening and raid mode

Each handler module is loaded by the engine based on configuration and
registers itself through ``prepare(engine)``.
"""
