"""Unit tests for rule-spec prerequisite checks."""

from dataclasses import dataclass, field

from callsense.pipeline.dependencies import validate_spec_dependencies


@dataclass
class Spec:
    slug: str
    depends_on: list = field(default_factory=list)


class TestValidateSpecDependencies:
    """Tests for missing prerequisites and cycles."""

    def test_satisfied(self):
        result = validate_spec_dependencies([Spec("measure"), Spec("aggregate", ["measure"])])
        assert result.valid
        assert result.warnings == []
        assert result.skipped == []

    def test_missing_prerequisite(self):
        result = validate_spec_dependencies([Spec("aggregate", ["measure"])])

        assert not result.valid
        assert result.skipped == ["aggregate"]
        assert result.warnings == ["aggregate: missing prerequisite(s) measure"]

    def test_cycle_flags_members_only(self):
        specs = [
            Spec("a", ["b"]),
            Spec("b", ["a"]),
            Spec("c", ["a"]),
        ]
        result = validate_spec_dependencies(specs)

        assert sorted(result.skipped) == ["a", "b"]
        assert "a: dependency cycle" in result.warnings
        assert "b: dependency cycle" in result.warnings

    def test_self_dependency_is_cycle(self):
        result = validate_spec_dependencies([Spec("loop", ["loop"])])
        assert result.skipped == ["loop"]

    def test_no_specs(self):
        assert validate_spec_dependencies([]).valid
