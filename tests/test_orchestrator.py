from __future__ import annotations

import logging
import threading
import time

import pytest

from pyagg.behavior.native import NativeRegistry
from pyagg.behavior.resolver import BehaviorResolver
from pyagg.behavior.spec import AggregationStrategy, BehaviorKind, BehaviorSpec
from pyagg.exceptions import AggConfigError, AggregationError, KeyDerivationError, ResolutionError
from pyagg.models.atom import DataAtom
from pyagg.models.delta import AtomOperation, UpdateDelta
from pyagg.query.alerts import Alert, FunctionAlert
from pyagg.query.models import AggregationQuery
from pyagg.query.orchestrator import QueryOrchestrator
from pyagg.state.store import MergeStore

SUM_LOAD_SCRIPT = """
def instantiate():
    def meld(first, second):
        return first.with_values(load=int(first.get("load")) + int(second.get("load")))
    return meld
"""

ALWAYS = BehaviorSpec.scripted(BehaviorKind.PREDICATE, "def instantiate():\n    return lambda obj: True\n")


def _summing_query(query_id: str = "q1") -> AggregationQuery:
    return AggregationQuery(
        query_id=query_id,
        name="site load",
        predicate=ALWAYS,
        aggregation=BehaviorSpec.scripted(
            BehaviorKind.AGGREGATOR,
            SUM_LOAD_SCRIPT,
            aggregation=AggregationStrategy.MELDER,
            collation_ids="siteId",
        ),
    )


def _atom(site: str, load: str | None = None) -> DataAtom:
    return DataAtom(identifiers={"siteId": site}, values={} if load is None else {"load": load})


def _added(source_id: str, *atoms: DataAtom) -> UpdateDelta:
    return UpdateDelta(source_id=source_id, operations=tuple(AtomOperation.added(atom) for atom in atoms))


class CountingAlert(Alert):
    def __init__(self, name: str | None = None) -> None:
        super().__init__(name)
        self.updates = 0

    def handle_update(self) -> None:
        self.updates += 1


class OverloadAlert(Alert):
    """Alerts when any site in the active view carries more than 6 load."""

    def handle_update(self) -> None:
        view = self.query_adapter.active_view()
        self.alerted = any(int(atom.get("load", "0")) > 6 for atom in view.snapshot_atoms())


def test_sums_load_across_sources() -> None:
    orchestrator = QueryOrchestrator(_summing_query())

    orchestrator.update_results(_added("north", _atom("A", "3")))
    orchestrator.update_results(_added("south", _atom("A", "5")))

    assert list(orchestrator.active_view().snapshot_atoms()) == [_atom("A", "8")]


def test_removal_leaves_remaining_atom_unmelded() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    orchestrator.update_results(_added("north", _atom("A", "3")))
    orchestrator.update_results(_added("south", _atom("A", "5")))

    orchestrator.update_results(UpdateDelta(source_id="north", operations=(AtomOperation.removed(_atom("A")),)))

    assert list(orchestrator.active_view().snapshot_atoms()) == [_atom("A", "5")]


def test_exception_from_one_source_keeps_data_from_another() -> None:
    orchestrator = QueryOrchestrator(_summing_query())

    orchestrator.update_results(UpdateDelta(source_id="north", exception="timeout"))
    orchestrator.update_results(_added("south", _atom("B", "1")))

    assert orchestrator.raw_view().exception_map() == {"north": "timeout"}
    assert orchestrator.active_view().exception_map() == {"north": "timeout"}
    assert list(orchestrator.active_view().snapshot_atoms()) == [_atom("B", "1")]


def test_views_without_aggregation_are_the_raw_store() -> None:
    query = AggregationQuery(query_id="plain", predicate=ALWAYS)
    orchestrator = QueryOrchestrator(query)

    assert not orchestrator.is_aggregating
    assert orchestrator.active_view() is orchestrator.raw_view()


def test_raw_view_keeps_per_source_atoms() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    orchestrator.update_results(_added("north", _atom("A", "3")))
    orchestrator.update_results(_added("south", _atom("A", "5")))

    assert orchestrator.raw_view().source_ids() == ["north", "south"]
    assert orchestrator.active_view().source_ids() == ["aggregate"]


def test_unresolvable_aggregation_raises() -> None:
    query = AggregationQuery(
        query_id="q",
        predicate=ALWAYS,
        aggregation=BehaviorSpec.scripted(BehaviorKind.AGGREGATOR, "...", dialect="cobol"),
    )

    with pytest.raises(ResolutionError):
        QueryOrchestrator(query)


def test_failing_aggregator_propagates_and_keeps_previous_view() -> None:
    script = """
def instantiate():
    def aggregate(atoms):
        atoms = list(atoms)
        if len(atoms) > 1:
            raise ValueError("too many")
        return atoms
    return aggregate
"""
    query = AggregationQuery(
        query_id="q",
        predicate=ALWAYS,
        aggregation=BehaviorSpec.scripted(BehaviorKind.AGGREGATOR, script),
    )
    orchestrator = QueryOrchestrator(query)
    orchestrator.update_results(_added("north", _atom("A", "1")))

    with pytest.raises(AggregationError):
        orchestrator.update_results(_added("south", _atom("B", "2")))

    assert list(orchestrator.active_view().snapshot_atoms()) == [_atom("A", "1")]


def test_each_update_notifies_exactly_once() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    alert = CountingAlert()
    calls: list[str] = []
    orchestrator.add_alert(alert)
    orchestrator.add_change_listener(lambda changed: calls.append(changed.query_id))

    orchestrator.update_results(_added("north", _atom("A", "3"), _atom("B", "1")))
    orchestrator.update_results(UpdateDelta(source_id="south", exception="refused"))

    assert alert.updates == 2
    assert calls == ["q1", "q1"]


def test_alerts_observe_the_recomputed_view() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    alert = OverloadAlert()
    orchestrator.add_alert(alert)

    orchestrator.update_results(_added("north", _atom("A", "3")))
    assert not alert.alerted

    orchestrator.update_results(_added("south", _atom("A", "5")))
    assert alert.alerted


def test_remove_alert_is_idempotent() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    alert = CountingAlert("watch")
    orchestrator.add_alert(alert)

    assert orchestrator.remove_alert("watch") is alert
    assert orchestrator.remove_alert("watch") is None
    assert not alert.is_attached

    orchestrator.update_results(_added("north", _atom("A", "1")))
    assert alert.updates == 0


def test_duplicate_alert_name_rejected() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    orchestrator.add_alert(CountingAlert("watch"))
    duplicate = CountingAlert("watch")

    with pytest.raises(AggConfigError):
        orchestrator.add_alert(duplicate)

    assert not duplicate.is_attached
    assert len(orchestrator.alerts()) == 1


def test_alert_bound_to_one_query_only() -> None:
    first = QueryOrchestrator(_summing_query("q1"))
    second = QueryOrchestrator(_summing_query("q2"))
    alert = CountingAlert()
    first.add_alert(alert)

    with pytest.raises(AggConfigError):
        second.add_alert(alert)

    assert alert.query_adapter is first


def test_alerts_may_change_the_registry_during_dispatch() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    late = CountingAlert("late")

    class SelfRemoving(Alert):
        def handle_update(self) -> None:
            orchestrator.remove_alert(self.name)
            orchestrator.add_alert(late)

    orchestrator.add_alert(SelfRemoving("once"))
    trailing = CountingAlert("trailing")
    orchestrator.add_alert(trailing)

    orchestrator.update_results(_added("north", _atom("A", "1")))

    # The dispatch snapshot was taken before the registry changed.
    assert trailing.updates == 1
    assert late.updates == 0
    assert [alert.name for alert in orchestrator.alerts()] == ["trailing", "late"]

    orchestrator.update_results(_added("north", _atom("B", "1")))
    assert late.updates == 1


def test_failing_alert_does_not_stop_the_others(caplog: pytest.LogCaptureFixture) -> None:
    orchestrator = QueryOrchestrator(_summing_query())

    def explode(query: QueryOrchestrator) -> None:
        raise RuntimeError("alert broke")

    orchestrator.add_alert(FunctionAlert(explode, name="broken"))
    survivor = CountingAlert("survivor")
    orchestrator.add_alert(survivor)

    with caplog.at_level(logging.WARNING, logger="pyagg.query.orchestrator"):
        orchestrator.update_results(_added("north", _atom("A", "1")))

    assert survivor.updates == 1
    assert any("broken" in record.getMessage() for record in caplog.records)


def test_function_alert_result_sets_flag() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    alert = FunctionAlert(lambda query: query.active_view().atom_count() > 1, name="many")
    orchestrator.add_alert(alert)

    orchestrator.update_results(_added("north", _atom("A", "1")))
    assert alert.alerted is False

    orchestrator.update_results(_added("north", _atom("B", "1")))
    assert alert.alerted is True


def test_removed_change_listener_is_not_called() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    calls: list[str] = []

    def listener(changed: QueryOrchestrator) -> None:
        calls.append(changed.query_id)

    orchestrator.add_change_listener(listener)
    orchestrator.remove_change_listener(listener)
    orchestrator.remove_change_listener(listener)
    orchestrator.update_results(_added("north", _atom("A", "1")))

    assert calls == []


def test_replace_results_installs_consolidated_store() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    orchestrator.update_results(_added("north", _atom("Z", "9")))
    consolidated = MergeStore()
    consolidated.apply_batch("north", [AtomOperation.added(_atom("A", "3"))])
    consolidated.apply_batch("south", [AtomOperation.added(_atom("A", "5"))])

    orchestrator.replace_results(consolidated)

    assert list(orchestrator.active_view().snapshot_atoms()) == [_atom("A", "8")]


def test_whole_document_round_trip() -> None:
    registry = NativeRegistry()
    registry.register("overload", OverloadAlert)
    resolver = BehaviorResolver(native=registry)

    orchestrator = QueryOrchestrator(_summing_query(), resolver=resolver)
    alert = resolver.resolve_alert(BehaviorSpec.native(BehaviorKind.ALERT, "overload"))
    alert.name = "overload"
    orchestrator.add_alert(alert)
    orchestrator.add_alert(CountingAlert("unspecified"))
    orchestrator.update_results(_added("north", _atom("A", "3")))
    orchestrator.update_results(_added("south", _atom("A", "5")))
    orchestrator.update_results(UpdateDelta(source_id="east", exception="down"))

    text = orchestrator.to_whole_document()
    restored = QueryOrchestrator.from_whole_document(text, resolver=resolver)

    assert restored.query == orchestrator.query
    assert list(restored.active_view().snapshot_atoms()) == [_atom("A", "8")]
    assert restored.active_view().exception_map() == {"east": "down"}
    assert [alert.name for alert in restored.alerts()] == ["overload"]
    assert restored.alerts()[0].alerted is True


def test_result_document_is_the_active_view() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    orchestrator.update_results(_added("north", _atom("A", "3")))
    orchestrator.update_results(_added("south", _atom("A", "5")))

    text = orchestrator.to_document()

    assert 'id="aggregate"' in text
    assert 'id="north"' not in text


def test_partially_applied_batch_still_recomputes_and_notifies() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    alert = CountingAlert()
    orchestrator.add_alert(alert)
    orchestrator.update_results(_added("north", _atom("A", "1")))

    with pytest.raises(KeyDerivationError):
        orchestrator.update_results(_added("north", _atom("B", "2"), DataAtom(values={"load": "4"})))

    assert set(orchestrator.raw_view().table("north")) == {("A",), ("B",)}
    assert [atom.get("siteId") for atom in orchestrator.active_view().snapshot_atoms()] == ["A", "B"]
    assert alert.updates == 2


def test_active_view_reports_responding_sources() -> None:
    orchestrator = QueryOrchestrator(_summing_query())

    orchestrator.update_results(_added("north", _atom("A", "3")))
    orchestrator.update_results(UpdateDelta(source_id="south", exception="timeout"))

    assert orchestrator.active_view().responding_sources() == frozenset({"north", "south"})
    assert orchestrator.active_view().responding_sources() == orchestrator.raw_view().responding_sources()


def test_collation_on_value_field_keeps_every_group() -> None:
    query = AggregationQuery(
        query_id="regions",
        predicate=ALWAYS,
        aggregation=BehaviorSpec.scripted(
            BehaviorKind.AGGREGATOR,
            SUM_LOAD_SCRIPT,
            aggregation=AggregationStrategy.MELDER,
            collation_ids="region",
        ),
    )
    orchestrator = QueryOrchestrator(query)

    orchestrator.update_results(
        _added("north", DataAtom(identifiers={"siteId": "A"}, values={"region": "east", "load": "3"}))
    )
    orchestrator.update_results(
        _added("south", DataAtom(identifiers={"siteId": "A"}, values={"region": "west", "load": "5"}))
    )

    derived = list(orchestrator.active_view().snapshot_atoms())
    assert [(atom.get("region"), atom.get("load")) for atom in derived] == [("east", "3"), ("west", "5")]
    assert all(atom.get("siteId") == "A" for atom in derived)


def test_slow_recompute_never_overwrites_a_newer_view() -> None:
    entered = threading.Event()
    release = threading.Event()

    class GatedCount:
        def __init__(self) -> None:
            self.calls = 0

        def aggregate(self, atoms: object) -> list[DataAtom]:
            atoms = list(atoms)
            self.calls += 1
            if self.calls == 1:
                entered.set()
                release.wait(5)
            return [DataAtom(identifiers={"total": "all"}, values={"count": str(len(atoms))})]

    registry = NativeRegistry()
    registry.register("gated", GatedCount)
    query = AggregationQuery(
        query_id="gated",
        predicate=ALWAYS,
        aggregation=BehaviorSpec.native(BehaviorKind.AGGREGATOR, "gated"),
    )
    orchestrator = QueryOrchestrator(query, resolver=BehaviorResolver(native=registry))

    first = threading.Thread(target=orchestrator.update_results, args=(_added("north", _atom("A", "1")),))
    second = threading.Thread(target=orchestrator.update_results, args=(_added("south", _atom("B", "1")),))
    first.start()
    assert entered.wait(5)
    second.start()
    deadline = time.monotonic() + 5
    while orchestrator.raw_view().atom_count() < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    release.set()
    first.join(5)
    second.join(5)

    assert orchestrator.raw_view().atom_count() == 2
    assert [atom.get("count") for atom in orchestrator.active_view().snapshot_atoms()] == ["2"]


def test_derived_view_cannot_replace_raw_results() -> None:
    orchestrator = QueryOrchestrator(_summing_query())
    orchestrator.update_results(_added("north", _atom("A", "3")))

    with pytest.raises(AggConfigError):
        orchestrator.replace_results(orchestrator.active_view())
