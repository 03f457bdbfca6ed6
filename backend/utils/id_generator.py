"""
Short prefixed ID generator for weave entities.

Format: {prefix}_{base36_random}
- sg_xxxxxxxx  - signal
- tn_xxxxxxxx  - tension
- st_xxxxxxxx  - story
- ev_xxxxxxxx  - evidence
- fd_xxxxxxxx  - finding
- dc_xxxxxxxx  - deferred candidate

8 chars base36 = 36^8 = 2.8 trillion unique IDs per type
Total length: 11 chars (2 prefix + 1 underscore + 8 random)
"""
import secrets

# Base36 alphabet (lowercase letters + digits)
ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(ALPHABET)  # 36

# Valid prefixes
PREFIXES = {
    'signal': 'sg',
    'tension': 'tn',
    'story': 'st',
    'evidence': 'ev',
    'finding': 'fd',
    'deferred': 'dc',
}


def _random_base36(length: int = 8) -> str:
    """Generate random base36 string"""
    return ''.join(ALPHABET[secrets.randbelow(BASE)] for _ in range(length))


def generate_id(entity_type: str) -> str:
    """
    Generate a new short ID for the given entity type.

    Args:
        entity_type: One of the keys of PREFIXES ('signal', 'story', ...)

    Returns:
        Short ID like 'st_x5b8r2yj'

    Raises:
        ValueError: If entity_type is invalid
    """
    if entity_type not in PREFIXES:
        raise ValueError(f"Invalid entity type: {entity_type}. "
                         f"Must be one of: {list(PREFIXES.keys())}")

    return f"{PREFIXES[entity_type]}_{_random_base36(8)}"


def generate_signal_id() -> str:
    return generate_id('signal')


def generate_tension_id() -> str:
    return generate_id('tension')


def generate_story_id() -> str:
    return generate_id('story')


def generate_finding_id() -> str:
    return generate_id('finding')
