"""
String Similarity - How Close Is "hey matrixx" to "hey matrix"?
================================================================

Speech recognizers rarely hear a phrase perfectly. A missing letter or
an extra one should not stop Matrix from waking up, so wake detection
falls back to a similarity score when exact checks fail.

LEARNING POINT: Edit Distance (Levenshtein)
----------------------------------------------
The edit distance between two strings is the minimum number of single
character insertions, deletions or substitutions needed to turn one
into the other:

    "matrix"  → "matrixx"   distance 1 (insert "x")
    "matrix"  → "metrix"    distance 1 (substitute "a" → "e")

Normalising by the longer length gives a score in [0, 1]:

    similarity = 1 - distance / max(len(a), len(b))
"""


def levenshtein_distance(a: str, b: str) -> int:
    """
    Classic dynamic-programming edit distance, unit cost per operation.

    LEARNING POINT: Rolling Rows
    ------------------------------
    The full DP table is len(a) x len(b), but each row only depends on
    the previous one, so two rows are enough.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(
                    previous[j - 1],  # substitute
                    current[j - 1],   # insert
                    previous[j],      # delete
                ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Case-insensitive similarity in [0, 1]; 1 means identical.

    Two empty strings are identical.
    """
    a, b = a.lower(), b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / longest
