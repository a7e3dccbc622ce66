"""Customer-contact hub: PBX manager link, chat assistant and realtime events."""
