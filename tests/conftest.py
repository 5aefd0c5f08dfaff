"""Shared pytest fixtures for the differential expression tests."""
import pytest
import numpy as np
import pandas as pd

GROUPS = ["Healthy", "Adjacent", "Tumor"]


def make_dataset(n_features=100, n_per_group=4, effect=2.0, n_true=10, noise=0.3, seed=42):
    """Synthetic log2 matrix with a Tumor-only shift on the first n_true features."""
    rng = np.random.RandomState(seed)
    labels = [g for g in GROUPS for _ in range(n_per_group)]
    samples = [f"GSM{i:07d}" for i in range(len(labels))]
    features = [f"gene_{i + 1:03d}" for i in range(n_features)]

    values = rng.normal(0.0, noise, size=(n_features, len(labels)))
    tumor = np.array([lab == "Tumor" for lab in labels])
    values[:n_true, tumor] += effect

    expression = pd.DataFrame(values + 8.0, index=features, columns=samples)
    metadata = pd.DataFrame({"group": labels}, index=pd.Index(samples, name="sample_id"))
    return expression, metadata


@pytest.fixture
def groups():
    return list(GROUPS)


@pytest.fixture
def synthetic_data():
    """100 features x 12 samples (4 Healthy, 4 Adjacent, 4 Tumor)."""
    return make_dataset()


@pytest.fixture
def true_features():
    return [f"gene_{i:03d}" for i in range(1, 11)]


@pytest.fixture
def control_features():
    """Noise-only block with no simulated effect."""
    return [f"gene_{i:03d}" for i in range(11, 21)]


@pytest.fixture
def shuffled_metadata(synthetic_data):
    """Metadata in a different order than the expression columns."""
    _, metadata = synthetic_data
    return metadata.sample(frac=1.0, random_state=7)


SOURCE_NAMES = {
    "Healthy": "colon mucosa from healthy donor",
    "Adjacent": "normal mucosa adjacent to tumor",
    "Tumor": "colon tumor",
}


class FakeGSE:
    """Stand-in for a GEOparse GSE with the attributes the loader reads."""

    def __init__(self, expression, metadata):
        self._expression = expression
        labels = metadata["group"]
        self.phenotype_data = pd.DataFrame({
            "title": [f"{label} sample {i}" for i, label in enumerate(labels)],
            "geo_accession": list(metadata.index),
            "source_name_ch1": [SOURCE_NAMES[label] for label in labels],
            "characteristics_ch1.0.tissue": [label.lower() for label in labels],
        }, index=list(metadata.index))
        self.pivot_calls = []

    def pivot_samples(self, values):
        self.pivot_calls.append(values)
        table = self._expression.copy()
        table.index.name = "ID_REF"
        return table


@pytest.fixture
def fake_gse():
    expression, metadata = make_dataset()
    return FakeGSE(expression, metadata)
