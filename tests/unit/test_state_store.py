import threading
from dataclasses import replace

import pytest

from liveart.errors import DuplicateAsset
from liveart.state.store import AssetStateStore
from tests.helpers.builders import BASE, asset, rule


def test_add_and_duplicate():
    s = AssetStateStore()
    s.add(asset("a"))
    assert "a" in s and len(s) == 1
    with pytest.raises(DuplicateAsset):
        s.add(asset("a"))


def test_uninitialized_until_first_apply():
    s = AssetStateStore()
    s.add(asset("a"))
    st = s.status("a")
    assert st.phase == "uninitialized" and st.state is None
    assert s.current_state("a") is None


def test_apply_is_compare_and_set():
    s = AssetStateStore()
    s.add(asset("a"))
    st = replace(BASE, derived_value=5.0)
    assert s.apply("a", st, observed_at=1.0) is True
    assert s.apply("a", replace(BASE, derived_value=5.0), observed_at=2.0) is False
    assert s.current_state("a") == st
    # metadata still refreshed on a no-op apply
    assert s.status("a").last_observed_at == 2.0


def test_phase_follows_rule():
    s = AssetStateStore()
    s.add(asset("a"))
    s.apply("a", replace(BASE, color_scheme="red"), rule_id="hot")
    assert s.status("a").phase == "triggered"
    assert s.status("a").active_rule_id == "hot"
    s.apply("a", BASE)
    assert s.status("a").phase == "base"
    assert s.status("a").active_rule_id is None


def test_remove_then_everything_is_absent():
    s = AssetStateStore()
    s.add(asset("a"))
    s.apply("a", BASE)
    assert s.remove("a") is True
    assert s.remove("a") is False
    assert s.current_state("a") is None
    assert s.status("a") is None
    assert s.apply("a", replace(BASE, opacity=0.5)) is False
    assert s.replace_rules("a", ()) is False


def test_locked_yields_none_after_concurrent_remove():
    s = AssetStateStore()
    s.add(asset("a"))
    entered = threading.Event()
    release = threading.Event()
    seen = []

    def updater():
        with s.locked("a") as rec:
            entered.set()
            release.wait(2)
            seen.append(rec is not None)

    t = threading.Thread(target=updater)
    t.start()
    entered.wait(2)
    remover = threading.Thread(target=s.remove, args=("a",))
    remover.start()
    # remove waits for the in-flight update to finish
    remover.join(0.1)
    assert remover.is_alive()
    release.set()
    t.join(2)
    remover.join(2)
    assert seen == [True]
    with s.locked("a") as rec:
        assert rec is None


def test_replace_rules_swaps_definition():
    s = AssetStateStore()
    s.add(asset("a", rules=[rule("x", "gt", 1)]))
    assert s.replace_rules("a", (rule("y", "lt", 1),))
    assert [r.id for r in s.definition("a").rules] == ["y"]
