import json
from datetime import date
from pathlib import Path

import pytest

from medsignal.ingest import load_dictionary, load_products
from medsignal.ingest.criteria import AngleCriteria, CriteriaError, LegacyCriteria
from medsignal.ingest.extraction import ExtractionError, load_extraction, parse_extraction

FIXTURES = Path(__file__).parent / "fixtures" / "extractions"


def test_load_products():
    products = load_products()
    assert [product.id for product in products] == ["torr-rf", "skin-booster-legacy"]
    torr = products[0]
    assert isinstance(torr.scoring_criteria, AngleCriteria)
    assert torr.scoring_criteria.total_weight == 100
    assert torr.scoring_criteria.exclude_if == ["has_torr_rf"]
    assert len(torr.signal_rules) == 4
    assert isinstance(products[1].scoring_criteria, LegacyCriteria)
    assert products[1].signal_rules == []
    assert len(load_products(limit=1)) == 1


def test_load_products_rejects_broken_playbook(tmp_path):
    path = tmp_path / "products.yml"
    path.write_text("- id: broken\n  name: 고장\n  scoring_criteria: {}\n", encoding="utf-8")
    with pytest.raises(CriteriaError, match="broken"):
        load_products(path)


def test_load_dictionary(tmp_path):
    dictionary = load_dictionary()
    assert len(dictionary.entries) == 15
    assert dictionary.ocr_corrections["숏"] == "샷"

    path = tmp_path / "dictionary.yml"
    path.write_text("", encoding="utf-8")
    assert load_dictionary(path).entries == []


def test_load_extraction_accepts_field_variants():
    extracted = load_extraction(FIXTURES / "gangnam_sky.json")
    hospital = extracted.hospital
    assert hospital.id == "1042"
    assert hospital.opened_at == date(2023, 4, 1)
    assert hospital.doctor_count == 2
    assert (hospital.sigungu, hospital.latitude, hospital.longitude) == ("강남구", 37.4979, 127.0276)
    assert extracted.equipment_names == ["써마지 FLX", "울쎄라", "인모드"]
    assert extracted.equipment[0].category == "rf"
    prices = [(t.price_min, t.price) for t in extracted.treatments]
    assert prices == [(990000, None), (None, 120000), (4500000, None), (None, 350000)]
    assert extracted.treatments[3].is_promoted is False
    assert extracted.ocr_text.startswith("인모드")


def test_parse_extraction_defaults():
    extracted = parse_extraction({"hospital": {"id": "h-9", "name": "신규의원"}, "equipment": None})
    assert extracted.equipment == []
    assert extracted.treatments == []
    assert extracted.raw_text == ""
    assert extracted.hospital.data_quality_score == 0


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"hospital": {"name": "이름만"}},
        {"hospital": {"id": "h-1", "name": "병원"}, "equipment": [{"name": "  "}]},
        {"hospital": {"id": "h-1", "name": "병원"}, "doctor_count": -1},
        {"hospital": {"id": "h-1", "name": "병원", "lat": 137.5}},
    ],
)
def test_parse_extraction_rejects_bad_payloads(payload):
    with pytest.raises(ExtractionError):
        parse_extraction(payload)


def test_load_extraction_rejects_non_objects(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ExtractionError, match="invalid JSON"):
        load_extraction(broken)

    listing = tmp_path / "list.json"
    listing.write_text(json.dumps([1, 2]), encoding="utf-8")
    with pytest.raises(ExtractionError, match="expected an object"):
        load_extraction(listing)
