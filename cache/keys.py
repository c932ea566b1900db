"""
cache/keys.py -- Key patterns for everything the auth subsystem keeps in the
counter store.

Format with str.format(), e.g. USER_LOCK.format("bob") -> "lock:user:bob".
Keep the patterns stable: operators and dashboards query these names directly.
"""

USER_LOCK = "lock:user:{}"
IP_BLOCK = "block:ip:{}"
USER_ATTEMPTS = "attempts:user:{}"
IP_ATTEMPTS = "attempts:ip:{}"
IP_BLOCK_LEVEL = "blockcount:ip:{}"
BLACKLISTED_TOKEN = "blacklist:token:{}"
RESET_PASSWORD = "reset:password:{}"
