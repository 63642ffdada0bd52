from decimal import Decimal
import os
from dotenv import load_dotenv
load_dotenv()
# ---- JSON-RPC ----
RPC_TIMEOUT_SEC = int(os.environ.get("RPC_TIMEOUT_SEC", "30"))
RPC_REQUESTS_PER_SEC = float(os.environ.get("RPC_REQUESTS_PER_SEC", "10"))
RPC_MAX_RETRIES = int(os.environ.get("RPC_MAX_RETRIES", "3"))
RPC_BATCH_SIZE = 200              # eth_call entries per JSON-RPC batch

# ENS reverse lookups only resolve on mainnet
RPC_MAINNET = os.environ.get("RPC_MAINNET")

# ---- Log scanning ----
SCAN_CHUNK_SIZE = int(os.environ.get("SCAN_CHUNK_SIZE", "10000"))     # blocks per eth_getLogs
SCAN_MAX_WORKERS = int(os.environ.get("SCAN_MAX_WORKERS", "4"))       # in-flight sub-ranges
SCAN_MAX_RETRIES = int(os.environ.get("SCAN_MAX_RETRIES", "5"))
SCAN_BACKOFF_BASE_SEC = float(os.environ.get("SCAN_BACKOFF_BASE_SEC", "0.5"))

# keccak("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# ---- Tracing ----
TRACE_DEFAULT_TOP_N = 10
TRACE_DEFAULT_THRESHOLD = Decimal(os.environ.get("TRACE_DEFAULT_THRESHOLD", "0.10"))
TRACE_MAX_WORKERS = int(os.environ.get("TRACE_MAX_WORKERS", "3"))     # concurrent level-2 scans

# ---- Annotation ----
ANNOTATE_MAX_WORKERS = 3
