# conftest.py
"""Shared fixtures: small Titanic-shaped CSV files and a fast config."""

import csv

import numpy as np
import pytest

from titanic_workbench.config import WorkbenchConfig

HEADER = ["PassengerId", "Survived", "Pclass", "Name", "Sex", "Age",
          "SibSp", "Parch", "Ticket", "Fare", "Cabin", "Embarked"]

# Unquoted name: the comma splits it and shifts every later field right
BROKEN_LINE = "999,0,3,Allen, Mr. William Henry,male,35,0,0,373450,8.05,,S"


def make_rows(n=80, seed=7, labeled=True, start_id=1):
    rng = np.random.default_rng(seed)
    rows = []
    for i in range(n):
        sex = "female" if i % 2 == 0 else "male"
        pclass = (i % 3) + 1
        age = "" if i % 9 == 0 else str(int(rng.integers(1, 70)))
        fare = f"{rng.uniform(5, 120):.2f}"
        survived = 1 if (sex == "female" and pclass < 3) or i % 7 == 0 else 0
        row = {
            "PassengerId": start_id + i,
            "Pclass": pclass,
            "Name": f"Passenger{i}, Mr. Test",
            "Sex": sex,
            "Age": age,
            "SibSp": int(rng.integers(0, 3)),
            "Parch": int(rng.integers(0, 2)),
            "Ticket": f"T{i}",
            "Fare": fare,
            "Cabin": "" if i % 4 else f"C{i}",
            "Embarked": "" if i % 17 == 0 else "SCQ"[i % 3],
        }
        if labeled:
            row["Survived"] = survived
        rows.append(row)
    return rows


def write_csv(path, rows, header, extra_lines=()):
    with open(path, "w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=header)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        for line in extra_lines:
            fh.write(line + "\n")
    return str(path)


@pytest.fixture
def train_csv(tmp_path):
    return write_csv(tmp_path / "train.csv", make_rows(80), HEADER, [BROKEN_LINE, ""])


@pytest.fixture
def test_csv(tmp_path):
    header = [h for h in HEADER if h != "Survived"]
    return write_csv(tmp_path / "test.csv", make_rows(12, seed=11, labeled=False, start_id=892), header)


@pytest.fixture
def fast_config():
    return WorkbenchConfig(epochs=5, batch_size=16, patience=2, roc_steps=50, random_state=0)
