from productcheck.utils import clean_barcode, hash_key, is_valid_barcode, looks_like_barcode, normalize_key


def test_normalize_key_trims_and_lowercases():
    assert normalize_key("  Milo Energy ") == "milo energy"
    assert normalize_key(None) == ""


def test_ean13_requires_correct_check_digit():
    assert is_valid_barcode("4006381333931")
    assert not is_valid_barcode("4006381333932")


def test_other_barcode_lengths_only_need_digits():
    assert is_valid_barcode("40063813")
    assert is_valid_barcode("012345678905")
    assert not is_valid_barcode("1234567")
    assert not is_valid_barcode("123456789012345")
    assert not is_valid_barcode("40063813A")


def test_scanner_separators_are_ignored():
    assert clean_barcode(" 4006-3813 33931 ") == "4006381333931"
    assert is_valid_barcode("4006-3813-33931")


def test_looks_like_barcode():
    assert looks_like_barcode("4006381333931")
    assert not looks_like_barcode("Peak Milk")
    assert not looks_like_barcode("12345")


def test_hash_key_is_case_insensitive():
    assert hash_key("Peak Milk", None) == hash_key("peak milk ", None)
    assert hash_key("Peak Milk", None) != hash_key("4006381333931", "Peak Milk")
