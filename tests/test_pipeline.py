"""Tests for the end-to-end pipeline."""
import json

import GEOparse
import pytest
import pandas as pd
import yaml

from pipeline import DEFAULT_CONFIG, ExpressionPipeline, main, merge_config

from conftest import make_dataset


@pytest.fixture
def project(tmp_path):
    """Expression/metadata tables, gene sets and a config on disk."""
    expression, metadata = make_dataset()
    expression.to_csv(tmp_path / "expression.tsv", sep="\t")
    metadata.to_csv(tmp_path / "metadata.csv")

    true_genes = [f"gene_{i:03d}" for i in range(1, 11)]
    other_genes = [f"gene_{i:03d}" for i in range(50, 70)]
    (tmp_path / "sets.gmt").write_text(
        "TUMOR_PROGRAM\tsimulated\t" + "\t".join(true_genes + other_genes[:5]) + "\n"
        "BACKGROUND\tsimulated\t" + "\t".join(other_genes) + "\n"
    )

    config = {
        "project": {"name": "synthetic"},
        "data": {
            "expression": "expression.tsv",
            "metadata": "metadata.csv",
            "gene_sets": "sets.gmt",
            "results_dir": "results",
        },
        "enrichment": {"min_size": 5},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))
    return tmp_path, config_path


class TestMergeConfig:
    """Tests for merge_config."""

    def test_nested_override(self):
        merged = merge_config(DEFAULT_CONFIG, {"de_analysis": {"thresholds": {"padj": 0.1}}})
        assert merged["de_analysis"]["thresholds"]["padj"] == 0.1
        assert merged["de_analysis"]["thresholds"]["log2fc"] == 1.0
        assert DEFAULT_CONFIG["de_analysis"]["thresholds"]["padj"] == 0.05


class TestExpressionPipeline:
    """Tests for ExpressionPipeline."""

    def test_full_run(self, project):
        tmp_path, config_path = project
        pipeline = ExpressionPipeline(str(config_path))
        results = pipeline.run_full_pipeline()

        assert set(results) == {"Tumor-Healthy", "Adjacent-Healthy", "Tumor-Adjacent"}
        assert len(pipeline.significant["Tumor-Healthy"]) == 10

        out = tmp_path / "results"
        for name in ["de_Tumor_Healthy.csv", "significant_Tumor_Healthy.csv",
                     "enrichment_Tumor_Healthy.csv", "pca_scores.csv",
                     "sample_correlation.csv", "de_summary.csv", "pipeline_summary.json"]:
            assert (out / name).exists(), name

        enrichment = pd.read_csv(out / "enrichment_Tumor_Healthy.csv")
        assert enrichment.iloc[0]["term"] == "TUMOR_PROGRAM"

        summary = json.loads((out / "pipeline_summary.json").read_text())
        assert summary["data"]["samples"] == 12
        assert summary["de_analysis"]["Tumor-Healthy"]["significant"] == 10

    def test_de_step_runs_prerequisites(self, project):
        _, config_path = project
        pipeline = ExpressionPipeline(str(config_path))
        pipeline.step4_differential_expression()
        assert pipeline.expression is not None
        assert pipeline.de_results is not None

    def test_downloads_geo_accession(self, monkeypatch, tmp_path, fake_gse):
        monkeypatch.setattr(GEOparse, "get_GEO", lambda geo, destdir, silent: fake_gse)
        config = {
            "data": {"geo_accession": "GSE44076", "geo_dir": "geo", "results_dir": "results"},
            "groups": {"rules": [
                {"group": "Adjacent", "keywords": ["adjacent"]},
                {"group": "Healthy", "keywords": ["healthy", "donor"], "exclude": ["tumor"]},
                {"group": "Tumor", "keywords": ["tumor"]},
            ]},
        }
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump(config))

        pipeline = ExpressionPipeline(str(config_path))
        pipeline.step4_differential_expression()

        assert (tmp_path / "geo").is_dir()
        assert pipeline.metadata["group"].value_counts().to_dict() == {
            "Healthy": 4, "Adjacent": 4, "Tumor": 4
        }
        assert len(pipeline.significant["Tumor-Healthy"]) == 10


class TestMain:
    """Tests for the command line entry point."""

    def test_step_de(self, project):
        tmp_path, config_path = project
        assert main(["--config", str(config_path), "--step", "de"]) == 0
        assert (tmp_path / "results" / "de_summary.csv").exists()

    def test_bad_contrast_exits_nonzero(self, project):
        _, config_path = project
        config = yaml.safe_load(config_path.read_text())
        config["de_analysis"] = {"contrasts": ["Tumor - Polyp"]}
        config_path.write_text(yaml.safe_dump(config))
        assert main(["--config", str(config_path), "--step", "de"]) == 1
