import re

from fileshare.services.keys import generate_object_key, sanitize_name


def test_sanitize_replaces_unsafe_characters():
    assert sanitize_name("Quarterly report (final).docx") == "Quarterly_report__final_.docx"
    assert sanitize_name("naïve résumé.pdf") == "na_ve_r_sum_.pdf"
    assert sanitize_name("ok-name_1.txt") == "ok-name_1.txt"


def test_sanitize_never_returns_empty():
    assert sanitize_name("") == "_"


def test_key_without_folder():
    key = generate_object_key("user-1", "a b.txt", "", timestamp_ms=1700000000000)
    assert re.fullmatch(r"user-1/1700000000000-[a-z0-9]{6}-a_b\.txt", key)


def test_key_with_folder_path():
    key = generate_object_key("user-1", "plan.xlsx", "Projects/2024", timestamp_ms=42)
    assert key.startswith("user-1/Projects/2024/42-")
    assert key.endswith("-plan.xlsx")


def test_keys_for_same_name_do_not_collide():
    keys = {generate_object_key("u", "same.txt", "dir", timestamp_ms=1) for _ in range(200)}
    assert len(keys) == 200


def test_path_separators_in_filename_stay_in_one_segment():
    key = generate_object_key("u", "../../etc/passwd", "", timestamp_ms=1)
    assert key.count("/") == 1
