"""Minimal ABI of the deployed EventEscrow contract (only the members we call)."""

ESCROW_ABI: list[dict] = [
    # --- Reads ---
    {
        "inputs": [
            {"name": "eventId", "type": "bytes32"},
            {"name": "attendee", "type": "address"},
        ],
        "name": "getStake",
        "outputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "organizer", "type": "address"},
            {"name": "status", "type": "uint8"},
            {"name": "stakedAt", "type": "uint256"},
            {"name": "eventStartTime", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "eventId", "type": "bytes32"},
            {"name": "attendee", "type": "address"},
        ],
        "name": "hasActiveStake",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    # --- Writes ---
    {
        "inputs": [
            {"name": "eventId", "type": "bytes32"},
            {"name": "organizer", "type": "address"},
            {"name": "eventStartTime", "type": "uint256"},
        ],
        "name": "stake",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "eventId", "type": "bytes32"},
            {"name": "attendee", "type": "address"},
        ],
        "name": "release",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "eventId", "type": "bytes32"}],
        "name": "refund",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "eventId", "type": "bytes32"},
            {"name": "attendee", "type": "address"},
        ],
        "name": "forfeit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]
