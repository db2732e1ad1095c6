"""Global configuration for quorumsig."""

import os

# ---------- Signing sessions ----------
# A session that has not produced a signature within this window moves to FAILED.
SESSION_TIMEOUT_SECONDS = float(os.environ.get("QUORUMSIG_SESSION_TIMEOUT", "30"))

# ---------- Metered verification ----------
# Fixed cost per kernel operation, charged by GasMeter.
GAS_COSTS = {
    "add": 3,
    "mul": 5,
    "inv": 1200,
    "ec_add": 40,
    "ec_double": 40,
    "hash": 36,
}
# Hard per-call budget for a single verify(). Must stay above verifier.max_verify_cost().
VERIFY_GAS_BUDGET = int(os.environ.get("QUORUMSIG_VERIFY_GAS_BUDGET", "3000000"))

# Largest batch accepted by batch_verify.
MAX_BATCH_SIZE = int(os.environ.get("QUORUMSIG_MAX_BATCH_SIZE", "16"))

# ---------- Logging ----------
LOG_LEVEL = os.environ.get("QUORUMSIG_LOG_LEVEL", "INFO")
