import os

# Reachability: an online flag older than this is treated as a crashed client
PRESENCE_STALE_SECONDS = int(os.environ.get("SIGNALING_PRESENCE_STALE_SECONDS", "300"))

# Unanswered calls are timed out after this many seconds
RING_TIMEOUT_SECONDS = int(os.environ.get("SIGNALING_RING_TIMEOUT_SECONDS", "30"))

# Terminal outcomes are remembered this long to absorb duplicate deliveries
OUTCOME_GRACE_SECONDS = int(os.environ.get("SIGNALING_OUTCOME_GRACE_SECONDS", "60"))

# Empty channels are dropped after this many seconds
CHANNEL_GC_GRACE_SECONDS = int(os.environ.get("SIGNALING_CHANNEL_GC_GRACE_SECONDS", "300"))

# Background expiry sweep interval, 0 disables the sweeper thread
SWEEP_INTERVAL_SECONDS = int(os.environ.get("SIGNALING_SWEEP_INTERVAL_SECONDS", "30"))

TERMINAL_RETRY_BACKOFF_SECONDS = float(os.environ.get("SIGNALING_TERMINAL_RETRY_BACKOFF_SECONDS", "0.5"))

# Pusher rejects event data larger than 10KB
MAX_PAYLOAD_BYTES = 10240

# Pusher only calls the auth endpoint for private- and presence- channels
TOPIC_PREFIX = os.environ.get("SIGNALING_TOPIC_PREFIX", "private-")

TRANSPORT_TIMEOUT_SECONDS = 10.0

AUTH_COOKIE_NAME = "token"
JWT_ALGORITHMS = ["HS256"]
