"""Solana program ids, token mints and platform labels."""
from __future__ import annotations


# ──────────────────────────────────────────────────────────────
# Core programs
# ──────────────────────────────────────────────────────────────

SYSTEM_PROGRAM = "11111111111111111111111111111111"  # Native SOL transfers.
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"  # SPL Token.
TOKEN_2022_PROGRAM = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"  # SPL Token-2022.
ASSOCIATED_TOKEN_PROGRAM = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"
MEMO_PROGRAM = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
STAKE_PROGRAM = "Stake11111111111111111111111111111111111111"
VOTE_PROGRAM = "Vote111111111111111111111111111111111111111"

# Programs whose presence makes a transaction a value transfer.
TRANSFER_PROGRAMS = frozenset({SYSTEM_PROGRAM, TOKEN_PROGRAM, TOKEN_2022_PROGRAM})

# Labels for well-known programs that are neither DEX nor transfer programs.
KNOWN_PROGRAM_LABELS = {
    ASSOCIATED_TOKEN_PROGRAM: "Associated Token Account",
    COMPUTE_BUDGET_PROGRAM: "Compute Budget",
    MEMO_PROGRAM: "Memo Program",
    STAKE_PROGRAM: "Stake Program",
    VOTE_PROGRAM: "Vote Program",
}


# ──────────────────────────────────────────────────────────────
# DEX programs
# ──────────────────────────────────────────────────────────────

JUPITER = "Jupiter Aggregator"
RAYDIUM = "Raydium"
ORCA = "Orca"
METEORA = "Meteora"
SERUM = "Serum"
OPENBOOK = "OpenBook"
UNKNOWN_DEX = "Unknown DEX"

DEX_PROGRAMS = {
    "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4": JUPITER,  # Jupiter v6
    "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB": JUPITER,  # Jupiter v4
    "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8": RAYDIUM,  # Raydium AMM v4
    "CAMMCzo5YL8w4VFF8KVHrK22GGUQp5VhH5b9KmTcpY9": RAYDIUM,  # Raydium CLMM
    "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc": ORCA,  # Orca Whirlpool
    "M2mx93ekt1fmXSVkTrUL9xVFHkmME8HTUi5Cyc5aF7K": METEORA,
    "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin": SERUM,  # Serum v3
    "srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX": OPENBOOK,
}


# ──────────────────────────────────────────────────────────────
# Tokens
# ──────────────────────────────────────────────────────────────

SOL_MINT = "So11111111111111111111111111111111111111112"  # wrapped SOL, also used for native
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
JUP_MINT = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"
WIF_MINT = "EKpQGSJtjMFqKZ9KQanSqYXRcF8fB8zEHYMkLdCmvj7"

LAMPORTS_DECIMALS = 9

# (name, symbol, decimals)
DEFAULT_TOKEN_METADATA = {
    SOL_MINT: ("Solana", "SOL", 9),
    USDC_MINT: ("USD Coin", "USDC", 6),
    USDT_MINT: ("Tether USD", "USDT", 6),
    BONK_MINT: ("Bonk", "BONK", 5),
    JUP_MINT: ("Jupiter", "JUP", 6),
    WIF_MINT: ("dogwifhat", "WIF", 6),
}

UNKNOWN_TOKEN = ("Unknown Token", "UNKNOWN", 9)
