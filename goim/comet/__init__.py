"""Connection-side state: channels, rooms, buckets, whitelist, operations and configuration."""