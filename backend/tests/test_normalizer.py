"""
CalorieSnap Backend: Webhook Response Normalizer Tests
=======================================================

The three shapes the workflow has produced, the order they are tried in,
and the failure for anything else.
"""

import pytest

from caloriesnap.exceptions import ExtractionError
from caloriesnap.services.normalizer import (
    STRATEGIES,
    from_array_output,
    from_direct_payload,
    from_output_field,
    normalize,
)


class TestStrategies:
    def test_array_output(self, nutrition_data):
        assert from_array_output([{"output": nutrition_data}]) == nutrition_data

    def test_array_output_ignores_empty_list(self):
        assert from_array_output([]) is None

    def test_array_output_needs_output_key(self, nutrition_data):
        assert from_array_output([nutrition_data]) is None

    def test_output_field(self, nutrition_data):
        assert from_output_field({"output": nutrition_data}) == nutrition_data

    def test_output_field_rejects_lists(self, nutrition_data):
        assert from_output_field([{"output": nutrition_data}]) is None

    def test_direct_payload(self, nutrition_data):
        assert from_direct_payload(nutrition_data) is nutrition_data

    def test_direct_payload_needs_all_three_fields(self, nutrition_data):
        del nutrition_data["total"]
        assert from_direct_payload(nutrition_data) is None

    def test_order_is_array_then_object_then_direct(self):
        assert [name for name, _ in STRATEGIES] == ["array_output", "output_field", "direct"]


class TestNormalize:
    def test_array_wrapped(self, nutrition_data):
        assert normalize([{"output": nutrition_data}]) == nutrition_data

    def test_object_wrapped(self, nutrition_data):
        assert normalize({"output": nutrition_data}) == nutrition_data

    def test_direct(self, nutrition_data):
        assert normalize(nutrition_data) == nutrition_data

    def test_output_wins_over_direct_fields(self, nutrition_data):
        """An object carrying both `output` and the payload fields yields `output`."""
        raw = dict(nutrition_data, output={"status": "inner"})
        assert normalize(raw) == {"status": "inner"}

    def test_output_value_is_passed_through_unchecked(self):
        # Shape checking is the validator's job
        assert normalize({"output": "not an object"}) == "not an object"

    @pytest.mark.parametrize(
        "raw",
        [
            {},
            [],
            {"message": "Workflow was started"},
            [{"result": {}}],
            "plain text",
            42,
        ],
    )
    def test_unknown_shapes_raise(self, raw):
        with pytest.raises(ExtractionError, match="Unexpected response format"):
            normalize(raw)

    def test_custom_strategy_list(self):
        strategies = [("always", lambda raw: {"picked": raw})]
        assert normalize("x", strategies) == {"picked": "x"}
