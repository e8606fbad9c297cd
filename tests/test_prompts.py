"""Model request construction."""
import pytest

from profseg.llm_client import LLMConfig
from profseg.models import CATEGORY_ORDER, ProfileAnalysisConfig, ThresholdUnavailable
from profseg.prompts import build_request, system_prompt, user_prompt
from profseg.thresholds import compute_thresholds


class TestBuildRequest:
    def test_messages_and_config(self, rows, fields, thresholds):
        cfg = LLMConfig(model="m", temperature=0.1, max_tokens=10, thinking=None)
        req = build_request(rows, ["amt", "cnt", "fee"], fields, thresholds, llm_config=cfg)
        assert [m.role for m in req.messages] == ["system", "user"]
        assert req.config is cfg

    def test_thresholds_appear_verbatim(self, rows, fields, thresholds):
        text = build_request(rows, ["amt", "cnt"], fields, thresholds).messages[1].content
        assert "High Threshold (Q3 + 1.5*IQR): 21.00" in text
        assert "Low Threshold (Q1 - 0*IQR): 11.00" in text
        assert "High Threshold (Q3 + 1.5*IQR): 6.00" in text
        assert "1. DoubleHigh: amt >= 21.00 AND cnt >= 6.00" in text

    def test_sample_is_first_twenty_rows(self, fields):
        rows = [{"amt": i, "cnt": i % 4} for i in range(1, 26)]
        t = compute_thresholds(rows, "amt", "cnt")
        text = user_prompt(rows, ["amt", "cnt"], fields, t)
        assert "Total records: 25" in text
        assert "first 20 records" in text
        assert '"index": 20' in text
        assert '"index": 21' not in text
        assert '"amt": "20.00"' in text

    def test_missing_cells_rendered_as_na(self, fields, thresholds):
        rows = [{"amt": 1, "cnt": None, "name": ""}]
        text = user_prompt(rows, ["amt", "cnt", "name"], fields, thresholds)
        assert '"cnt": "N/A"' in text
        assert '"name": "N/A"' in text

    def test_subject_and_configured_fields(self, rows, fields, thresholds):
        config = ProfileAnalysisConfig.from_dict(
            {
                "subjectFieldName": "merchant",
                "analysisFields": [{"fieldName": "fee", "description": "fees charged"}],
            }
        )
        text = user_prompt(rows, ["amt", "cnt", "fee"], fields, thresholds, config)
        assert "Each record describes one merchant." in text
        assert "- fee: fees charged" in text

    def test_stddev_block(self, rows, fields):
        t = compute_thresholds(rows, "amt", "cnt", method="stddev")
        text = user_prompt(rows, ["amt", "cnt"], fields, t)
        assert "Standard Deviation Thresholds" in text
        assert "Mean: 29.60" in text

    def test_incomplete_thresholds(self, rows, fields):
        t = compute_thresholds(rows, "amt", None)
        with pytest.raises(ThresholdUnavailable):
            build_request(rows, ["amt"], fields, t)


class TestSystemPrompt:
    def test_lists_every_category_and_field(self, fields):
        text = system_prompt(fields)
        for tag in CATEGORY_ORDER:
            assert tag.value in text
        assert '"amt": total value' in text
        assert '"cnt": total count' in text
