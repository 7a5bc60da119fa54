"""Tests for the dataset loader."""

import threading

from triage_service import config
from triage_service.engines.dataset import DatasetLoader, build_dataset, normalize_token, parse_csv_rows


def test_normalize_token():
    assert normalize_token("  Skin_Rash ") == "skin rash"
    assert normalize_token("dischromic _patches") == "dischromic patches"
    assert normalize_token("toxic_look_(typhos)") == "toxic look typhos"
    assert normalize_token("temp 38.5!") == "temp 38.5"
    assert normalize_token(None) == ""


def test_parse_csv_quoted_fields_and_line_endings():
    text = 'Disease,Description\r\nFlu,"Fever, aches\nand chills"\r\n\r\n,,\nCold,Runny nose\n'
    rows = parse_csv_rows(text)
    assert rows == [
        ["Disease", "Description"],
        ["Flu", "Fever, aches\nand chills"],
        ["Cold", "Runny nose"],
    ]


def test_build_dataset_merges_rows_and_skips_header():
    matrix = [
        ["Disease", "Symptom_1", "Symptom_2"],
        ["Dengue", "high_fever", "joint_pain"],
        ["Dengue", "joint_pain", "back_pain"],
        ["Cold", "cough", ""],
    ]
    dataset = build_dataset(matrix, [["Disease", "Description"], ["Cold", "Common."]], [])

    assert dataset.loaded
    assert [d.name for d in dataset.diseases] == ["Dengue", "Cold"]
    assert dataset.diseases[0].symptoms == ("high fever", "joint pain", "back pain")
    assert dataset.symptoms == ("high fever", "joint pain", "back pain", "cough")
    assert dataset.descriptions == {"Cold": "Common."}
    assert dataset.precautions == {}


def test_bundled_dataset_loads():
    dataset = DatasetLoader(candidates=[config.BUNDLED_KNOWLEDGE_DIR]).load()

    assert dataset.loaded
    names = [d.name for d in dataset.diseases]
    # trailing spaces in the matrix are stripped, so names line up with descriptions
    assert "Diabetes" in names
    assert "Hypertension" in names
    assert "," in dataset.descriptions["Allergy"]
    assert dataset.precautions["Allergy"] == ["apply calamine", "cover area with bandage", "use ice to compress itching"]
    assert "high fever" in dataset.symptom_set
    dengue = next(d for d in dataset.diseases if d.name == "Dengue")
    assert len(dengue.symptoms) == 14


def test_missing_directory_returns_not_loaded(tmp_path):
    dataset = DatasetLoader(candidates=[tmp_path / "nowhere"]).load()
    assert not dataset.loaded
    assert dataset.diseases == ()


def test_load_is_memoized_across_threads():
    loader = DatasetLoader(candidates=[config.BUNDLED_KNOWLEDGE_DIR])
    results = []

    def worker():
        results.append(loader.load())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert loader.load() is results[0]
