import os

DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

# --- Chain read ---
CHAIN_PROVIDER = os.getenv("CHAIN_PROVIDER", "rpc").lower()
CHAIN_RPC_URL = os.getenv("CHAIN_RPC_URL", "https://mainnet.base.org")
RPC_TIMEOUT_SECS = float(os.getenv("RPC_TIMEOUT_SECS", "10"))

# Destination of every proof transaction.
TREASURY_ADDRESS = os.getenv("TREASURY_ADDRESS", "")

# 0 disables the age check
PROOF_MAX_AGE_SECS = int(os.getenv("PROOF_MAX_AGE_SECS", "3600"))

# --- Claim disbursement ---
DISBURSER = os.getenv("DISBURSER", "stub").lower()
CLAIM_TOKEN_CONTRACT = os.getenv("CLAIM_TOKEN_CONTRACT", "")
CLAIM_TOKEN_DECIMALS = int(os.getenv("CLAIM_TOKEN_DECIMALS", "18"))
TREASURY_PRIVATE_KEY = os.getenv("TREASURY_PRIVATE_KEY", "")
CLAIM_TOKEN_AMOUNT = os.getenv("CLAIM_TOKEN_AMOUNT", "40000")
CLAIM_WINDOW_HOURS = int(os.getenv("CLAIM_WINDOW_HOURS", "24"))

# --- Feedback ---
FEEDBACK_MAX_LENGTH = int(os.getenv("FEEDBACK_MAX_LENGTH", "500"))
FEEDBACK_SCOPE = os.getenv("FEEDBACK_SCOPE", "general")

# --- Payload tags (utf-8 prefix of the tx input data) ---
CLAIM_PAYLOAD_TAG = os.getenv("CLAIM_PAYLOAD_TAG", "claim")
FEEDBACK_PAYLOAD_TAG = os.getenv("FEEDBACK_PAYLOAD_TAG", "SEEN Feedback Submission")
PREDICTION_PAYLOAD_TAG = os.getenv("PREDICTION_PAYLOAD_TAG", "SEEN Prediction")

ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")

if CHAIN_PROVIDER not in ("rpc", "stub"):
    raise RuntimeError(f"Invalid CHAIN_PROVIDER={CHAIN_PROVIDER}")
if DISBURSER not in ("web3", "stub"):
    raise RuntimeError(f"Invalid DISBURSER={DISBURSER}")
