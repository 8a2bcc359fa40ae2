from __future__ import annotations

import pytest
from pydantic import BaseModel

from pyagg.aggregation.melding import MeldingAggregator
from pyagg.behavior.capabilities import FunctionPredicate
from pyagg.behavior.handle import BehaviorHandle
from pyagg.behavior.native import NativeConfig, NativeRegistry
from pyagg.behavior.resolver import BehaviorResolver
from pyagg.behavior.spec import AggregationStrategy, BehaviorKind, BehaviorSpec, parse_collation_ids
from pyagg.exceptions import AggConfigError, DocumentError, ResolutionError, TypeMismatchError
from pyagg.models.atom import DataAtom
from pyagg.query.alerts import Alert, FunctionAlert

SUM_MELDER_SCRIPT = """
def instantiate():
    def meld(first, second):
        return first.with_values(load=int(first.get("load")) + int(second.get("load")))
    return meld
"""


class FieldEqualsConfig(NativeConfig):
    field: str
    value: str
    negate: bool = False


class FieldEquals:
    def __init__(self, config: FieldEqualsConfig) -> None:
        self.config = config

    def execute(self, obj: dict[str, str]) -> bool:
        matched = obj.get(self.config.field) == self.config.value
        return matched != self.config.negate


class ThresholdAlert(Alert):
    def handle_update(self) -> None:
        self.alerted = True


def _registry() -> NativeRegistry:
    registry = NativeRegistry()
    registry.register("field_equals", FieldEquals, FieldEqualsConfig)
    registry.register("threshold", ThresholdAlert)
    return registry


def test_native_predicate_configured_from_params() -> None:
    resolver = BehaviorResolver(native=_registry())
    params = {"field": "status", "value": "up", "negate": "true"}
    spec = BehaviorSpec.native(BehaviorKind.PREDICATE, "field_equals", params)

    predicate = resolver.resolve_predicate(spec)

    assert isinstance(predicate, FieldEquals)
    assert predicate.config.negate is True
    assert predicate.execute({"status": "down"})


def test_native_unknown_param_fails_resolution() -> None:
    resolver = BehaviorResolver(native=_registry())
    spec = BehaviorSpec.native(BehaviorKind.PREDICATE, "field_equals", {"field": "a", "value": "b", "colour": "red"})

    with pytest.raises(ResolutionError, match="invalid configuration"):
        resolver.resolve_predicate(spec)


def test_native_unknown_param_rejected_for_plain_config_model() -> None:
    class LooseConfig(BaseModel):
        field: str
        value: str

    registry = NativeRegistry()
    registry.register("loose_equals", FieldEquals, LooseConfig)
    resolver = BehaviorResolver(native=registry)
    params = {"field": "a", "value": "b", "colour": "red"}

    with pytest.raises(ResolutionError, match="unknown parameters"):
        resolver.resolve_predicate(BehaviorSpec.native(BehaviorKind.PREDICATE, "loose_equals", params))


def test_native_params_rejected_without_config_model() -> None:
    resolver = BehaviorResolver(native=_registry())

    with pytest.raises(ResolutionError, match="accepts no parameters"):
        resolver.resolve_alert(BehaviorSpec.native(BehaviorKind.ALERT, "threshold", {"limit": "3"}))


def test_native_unknown_name_fails_resolution() -> None:
    resolver = BehaviorResolver(native=_registry())

    with pytest.raises(ResolutionError, match="no native behavior"):
        resolver.resolve_predicate(BehaviorSpec.native(BehaviorKind.PREDICATE, "missing"))


def test_native_duplicate_registration_rejected() -> None:
    registry = _registry()

    with pytest.raises(AggConfigError):
        registry.register("threshold", ThresholdAlert)
    registry.register("threshold", ThresholdAlert, replace=True)
    assert "threshold" in registry


def test_resolved_alert_remembers_its_spec() -> None:
    resolver = BehaviorResolver(native=_registry())
    spec = BehaviorSpec.native(BehaviorKind.ALERT, "threshold")

    alert = resolver.resolve_alert(spec)

    assert isinstance(alert, ThresholdAlert)
    assert alert.spec == spec


def test_kind_mismatch_raises() -> None:
    resolver = BehaviorResolver(native=_registry())
    spec = BehaviorSpec.native(BehaviorKind.ALERT, "threshold")

    with pytest.raises(TypeMismatchError) as excinfo:
        resolver.resolve_predicate(spec)

    assert excinfo.value.expected == BehaviorKind.PREDICATE
    assert excinfo.value.actual == BehaviorKind.ALERT


def test_unknown_dialect_and_implementation_resolve_to_none() -> None:
    resolver = BehaviorResolver()

    lisp = BehaviorSpec.scripted(BehaviorKind.PREDICATE, "(lambda (x) #t)", dialect="silk")
    wasm = BehaviorSpec(behavior_kind=BehaviorKind.PREDICATE, implementation_kind="wasm")

    assert resolver.resolve_predicate(lisp) is None
    assert resolver.resolve_predicate(wasm) is None


def test_script_returning_callable_is_adapted() -> None:
    resolver = BehaviorResolver()
    spec = BehaviorSpec.scripted(
        BehaviorKind.PREDICATE,
        "def instantiate():\n    return lambda obj: obj.get('status') == 'up'\n",
    )

    predicate = resolver.resolve_predicate(spec)

    assert isinstance(predicate, FunctionPredicate)
    assert predicate.execute({"status": "up"})
    assert not predicate.execute({"status": "down"})


def test_script_returning_instance_is_used_directly() -> None:
    script = """
class Watch(Alert):
    def handle_update(self):
        self.alerted = True

def instantiate():
    return Watch("watch")
"""
    alert = BehaviorResolver().resolve_alert(BehaviorSpec.scripted(BehaviorKind.ALERT, script))

    assert isinstance(alert, Alert)
    assert alert.name == "watch"


def test_script_callable_alert_named_from_params() -> None:
    spec = BehaviorSpec.scripted(
        BehaviorKind.ALERT,
        "def instantiate():\n    return lambda query: True\n",
        params={"name": "always"},
    )

    alert = BehaviorResolver().resolve_alert(spec)

    assert isinstance(alert, FunctionAlert)
    assert alert.name == "always"


def test_script_encoder_accepts_single_atom() -> None:
    spec = BehaviorSpec.scripted(
        BehaviorKind.ENCODER,
        "def instantiate():\n    return lambda obj: DataAtom(identifiers={'host': obj['host']})\n",
    )

    encoder = BehaviorResolver().resolve_encoder(spec)

    assert encoder is not None
    assert list(encoder.encode({"host": "h1"})) == [DataAtom(identifiers={"host": "h1"})]


@pytest.mark.parametrize(
    "script",
    [
        "def instantiate(:\n    pass\n",
        "x = 1\n",
        "def instantiate():\n    raise ValueError('nope')\n",
        "def instantiate():\n    return None\n",
        "def instantiate():\n    return 42\n",
    ],
)
def test_broken_scripts_fail_resolution(script: str) -> None:
    with pytest.raises(ResolutionError):
        BehaviorResolver().resolve_predicate(BehaviorSpec.scripted(BehaviorKind.PREDICATE, script))


def test_scripts_run_in_fresh_namespaces() -> None:
    resolver = BehaviorResolver()
    first = BehaviorSpec.scripted(
        BehaviorKind.PREDICATE,
        "seen = []\ndef instantiate():\n    return lambda obj: seen.append(obj) or len(seen) == 1\n",
    )

    one = resolver.resolve_predicate(first)
    two = resolver.resolve_predicate(first)

    assert one is not None and two is not None
    assert one.execute("a")
    assert two.execute("b")


def test_melder_aggregator_from_script() -> None:
    spec = BehaviorSpec.scripted(
        BehaviorKind.AGGREGATOR,
        SUM_MELDER_SCRIPT,
        aggregation=AggregationStrategy.MELDER,
        collation_ids="siteId",
    )

    aggregator = BehaviorResolver().resolve_aggregator(spec)

    assert isinstance(aggregator, MeldingAggregator)
    assert aggregator.collation_ids == ("siteId",)
    output = aggregator.aggregate(
        [
            DataAtom(identifiers={"siteId": "A"}, values={"load": "3"}),
            DataAtom(identifiers={"siteId": "A"}, values={"load": "5"}),
        ]
    )
    assert output == [DataAtom(identifiers={"siteId": "A"}, values={"load": "8"})]


def test_direct_aggregator_from_script() -> None:
    script = """
def instantiate():
    def aggregate(atoms):
        atoms = list(atoms)
        return [DataAtom(identifiers={"total": "all"}, values={"count": str(len(atoms))})]
    return aggregate
"""
    aggregator = BehaviorResolver().resolve_aggregator(BehaviorSpec.scripted(BehaviorKind.AGGREGATOR, script))

    assert aggregator is not None
    assert aggregator.aggregate([DataAtom(), DataAtom()]) == [
        DataAtom(identifiers={"total": "all"}, values={"count": "2"})
    ]


def test_new_dialect_is_added_without_touching_others() -> None:
    class UpperHost:
        dialect = "upper"

        def evaluate(self, source_text: str) -> BehaviorHandle:
            return BehaviorHandle(lambda obj: str(obj).upper() == source_text)

    resolver = BehaviorResolver()
    resolver.register_host(UpperHost())

    predicate = resolver.resolve_predicate(BehaviorSpec.scripted(BehaviorKind.PREDICATE, "UP", dialect="upper"))

    assert resolver.dialects() == ["python", "upper"]
    assert predicate is not None
    assert predicate.execute("up")


def test_spec_document_round_trip_resolves_equivalent_behavior() -> None:
    spec = BehaviorSpec.scripted(
        BehaviorKind.AGGREGATOR,
        SUM_MELDER_SCRIPT + "# load < limit && ok\n",
        aggregation=AggregationStrategy.MELDER,
        collation_ids=("siteId", "org"),
    )

    decoded = BehaviorSpec.from_document(spec.to_document())

    assert decoded == spec
    aggregator = BehaviorResolver().resolve_aggregator(decoded)
    assert isinstance(aggregator, MeldingAggregator)
    assert aggregator.collation_ids == ("siteId", "org")


def test_native_spec_document_round_trip() -> None:
    spec = BehaviorSpec.native(BehaviorKind.PREDICATE, "field_equals", {"field": "status", "value": "<up>"})

    decoded = BehaviorSpec.from_document(spec.to_document())

    assert decoded == spec
    predicate = BehaviorResolver(native=_registry()).resolve_predicate(decoded)
    assert predicate is not None
    assert predicate.execute({"status": "<up>"})


def test_collation_ids_split_on_any_separator() -> None:
    assert parse_collation_ids("siteId, org;rack\tzone\n") == ("siteId", "org", "rack", "zone")
    assert parse_collation_ids("") == ()


def test_aggregator_spec_defaults_to_direct() -> None:
    spec = BehaviorSpec.scripted(BehaviorKind.AGGREGATOR, "def instantiate():\n    return list\n")

    assert spec.aggregation is AggregationStrategy.DIRECT


def test_unknown_behavior_tag_rejected() -> None:
    with pytest.raises(DocumentError):
        BehaviorSpec.from_document("<gizmo implementation='native'><class>x</class></gizmo>")
