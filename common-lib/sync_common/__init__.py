from sync_common.codec import compress, decompress
from sync_common.service import Service
from sync_common.timing import log_slow, now_ms
