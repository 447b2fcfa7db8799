from followup.fingerprint import fingerprint, looks_like_fingerprint, normalize


def test_fingerprint_known_values() -> None:
    assert fingerprint("") == "fp_0"
    # ord("a") == 97 == 2 * 36 + 25
    assert fingerprint("a") == "fp_2p"


def test_fingerprint_is_deterministic_and_distinguishes_text() -> None:
    first = fingerprint("Create me a 3 day trip in Tokyo")
    assert first == fingerprint("Create me a 3 day trip in Tokyo")
    assert first != fingerprint("Create me a 4 day trip in Tokyo")
    assert looks_like_fingerprint(first)


def test_fingerprint_ignores_surrounding_and_repeated_whitespace() -> None:
    assert normalize("  Plan   a\ttrip \n") == "Plan a trip"
    assert fingerprint("  Plan   a\ttrip \n") == fingerprint("Plan a trip")


def test_fingerprint_stays_within_32_bits() -> None:
    value = int(fingerprint("x" * 10_000)[3:], 36)
    assert 0 <= value < 2**32


def test_looks_like_fingerprint_rejects_other_strings() -> None:
    assert not looks_like_fingerprint("hello")
    assert not looks_like_fingerprint("fp_ABC")
    assert not looks_like_fingerprint("")
