"""
Shared fixtures for the diagnostic API test suite.
"""
import pandas as pd
import pytest
from fastapi.testclient import TestClient

from diagnostico_pme.benchmarks import COLUMNS, get_benchmark_table
from diagnostico_pme.main import app

API_KEY = "test-key"


@pytest.fixture
def benchmark_table() -> pd.DataFrame:
    """Small curated table covering two countries and two metric types."""
    return pd.DataFrame([
        {"setor": "varejo", "pais": "BR", "tipo": "margem_bruta", "period": "2019-2024",
         "range_min": 35, "range_max": 52, "median": 43, "available": True,
         "source": "Associação X (2024)"},
        {"setor": "varejo", "pais": "BR", "tipo": "ebitda", "period": "2020-2024",
         "range_min": 8, "range_max": 15, "median": 11.5, "available": False,
         "source": "Relatório Y (2023)"},
        {"setor": "varejo", "pais": "US", "tipo": "margem_bruta", "period": None,
         "range_min": 30, "range_max": 60, "median": None, "available": False,
         "source": None},
        {"setor": "recorrencia", "pais": "BR", "tipo": "margem_bruta", "period": "2020-2024",
         "range_min": 60, "range_max": 85, "median": 72, "available": True,
         "source": "Companhia Z (2024)"},
    ], columns=COLUMNS)


@pytest.fixture
def client(monkeypatch, benchmark_table):
    monkeypatch.setenv("API_KEY", API_KEY)
    app.dependency_overrides[get_benchmark_table] = lambda: benchmark_table
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"x-api-key": API_KEY}
