import pytest

from respclient.chaindict import INITIAL_SIZE, ChainedDict, gen_hash_function


def _bytes_dict():
    return ChainedDict(gen_hash_function)


def test_hash_of_empty_input_is_seed():
    assert gen_hash_function(b"") == 5381


def test_hash_fits_in_32_bits_and_is_deterministic():
    data = b"x" * 1000
    value = gen_hash_function(data)
    assert 0 <= value <= 0xFFFFFFFF
    assert gen_hash_function(data) == value


def test_hash_distinguishes_order():
    assert gen_hash_function(b"ab") != gen_hash_function(b"ba")


def test_new_dict_is_empty_without_slots():
    d = _bytes_dict()
    assert len(d) == 0
    assert d.slots() == 0
    assert list(d) == []


def test_add_and_find():
    d = _bytes_dict()
    d.add(b"foo", 1)
    d.add(b"bar", 2)
    assert d.find(b"foo") == 1
    assert d.find(b"bar") == 2
    assert len(d) == 2
    assert d.slots() == INITIAL_SIZE


def test_add_duplicate_raises():
    d = _bytes_dict()
    d.add(b"foo", 1)
    with pytest.raises(KeyError):
        d.add(b"foo", 2)
    assert d.find(b"foo") == 1
    assert len(d) == 1


def test_find_missing_raises():
    d = _bytes_dict()
    with pytest.raises(KeyError):
        d.find(b"nope")
    d.add(b"foo", 1)
    with pytest.raises(KeyError):
        d.find(b"nope")


def test_replace_reports_whether_added():
    d = _bytes_dict()
    assert d.replace(b"k", "first") is True
    assert d.replace(b"k", "second") is False
    assert d.find(b"k") == "second"
    assert len(d) == 1


def test_delete():
    d = _bytes_dict()
    d.add(b"a", 1)
    d.add(b"b", 2)
    d.delete(b"a")
    assert len(d) == 1
    with pytest.raises(KeyError):
        d.find(b"a")
    assert d.find(b"b") == 2


def test_delete_missing_raises():
    d = _bytes_dict()
    with pytest.raises(KeyError):
        d.delete(b"a")
    d.add(b"b", 2)
    with pytest.raises(KeyError):
        d.delete(b"a")
    assert len(d) == 1


def test_table_doubles_when_full():
    d = _bytes_dict()
    keys = [b"key%d" % i for i in range(INITIAL_SIZE + 1)]
    for i, key in enumerate(keys):
        d.add(key, i)
    assert d.slots() == INITIAL_SIZE * 2
    for i, key in enumerate(keys):
        assert d.find(key) == i


def test_slots_stay_power_of_two_and_hold_entries():
    d = _bytes_dict()
    for i in range(100):
        d.add(b"%d" % i, i)
        slots = d.slots()
        assert slots & (slots - 1) == 0
        assert slots >= len(d)
    assert len(d) == 100


def test_expand_rejects_size_below_used():
    d = _bytes_dict()
    for i in range(3):
        d.add(b"%d" % i, i)
    with pytest.raises(ValueError):
        d.expand(2)
    assert len(d) == 3


def test_expand_rounds_up_and_keeps_entries():
    d = _bytes_dict()
    d.add(b"a", 1)
    d.expand(INITIAL_SIZE + 1)
    assert d.slots() == INITIAL_SIZE * 2
    assert d.find(b"a") == 1


def test_expand_empty_uses_initial_size():
    d = _bytes_dict()
    d.expand(0)
    assert d.slots() == INITIAL_SIZE
    assert len(d) == 0


def test_colliding_keys_are_chained():
    d = ChainedDict(lambda key: 0)
    for key in ("a", "b", "c"):
        d.add(key, key.upper())
    assert [d.find(k) for k in ("a", "b", "c")] == ["A", "B", "C"]
    d.delete("b")
    assert sorted(d) == ["a", "c"]


def test_chain_order_is_newest_first():
    d = ChainedDict(lambda key: 0)
    d.add("first", 1)
    d.add("second", 2)
    assert list(d) == ["second", "first"]


def test_custom_key_equality():
    d = ChainedDict(
        lambda key: gen_hash_function(key.lower()),
        lambda a, b: a.lower() == b.lower(),
    )
    d.add(b"Channel", 1)
    assert d.find(b"CHANNEL") == 1
    with pytest.raises(KeyError):
        d.add(b"channel", 2)


def test_iteration_yields_every_key_once():
    d = _bytes_dict()
    keys = {b"k%d" % i for i in range(20)}
    for key in keys:
        d.add(key, None)
    seen = list(d)
    assert len(seen) == len(keys)
    assert set(seen) == keys


def test_delete_current_key_during_iteration():
    d = _bytes_dict()
    keys = {b"k%d" % i for i in range(10)}
    for key in keys:
        d.add(key, None)
    visited = set()
    for key in d:
        visited.add(key)
        d.delete(key)
    assert visited == keys
    assert len(d) == 0


def test_clear_resets_table():
    d = _bytes_dict()
    for i in range(10):
        d.add(b"%d" % i, i)
    d.clear()
    assert len(d) == 0
    assert d.slots() == 0
    assert list(d) == []
    d.add(b"again", 1)
    assert d.find(b"again") == 1


def test_values_are_shared_objects():
    d = _bytes_dict()
    value = {"pending": 1}
    d.add(b"chan", value)
    d.find(b"chan")["pending"] -= 1
    assert value["pending"] == 0