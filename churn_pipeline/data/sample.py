"""
Sample Data
===========

Synthetic e-commerce churn dataset for demonstrations and tests.
"""

import numpy as np
import pandas as pd


def generate_sample_data(
    n_samples: int = 5000,
    positive_rate: float = 0.17,
    random_state: int = 42,
) -> pd.DataFrame:
    """
    Create a synthetic customer table with a learnable churn signal.

    Exactly ``round(n_samples * positive_rate)`` customers are labelled as
    churned: those with the highest latent risk (short tenure, complaints,
    long inactivity, little cashback).

    Args:
        n_samples: Number of customers
        positive_rate: Share of churned customers
        random_state: Random seed

    Returns:
        DataFrame with a ``CustomerID``, the feature columns and ``Churn``
    """
    rng = np.random.default_rng(random_state)

    df = pd.DataFrame({
        "CustomerID": np.arange(1, n_samples + 1),
        "Tenure": rng.integers(0, 61, n_samples),
        "PreferredLoginDevice": rng.choice(["Mobile Phone", "Computer", "Phone"], n_samples),
        "CityTier": rng.choice([1, 2, 3], n_samples),
        "WarehouseToHome": rng.uniform(5, 35, n_samples).round(1),
        "PreferredPaymentMode": rng.choice(["Debit Card", "Credit Card", "E wallet", "COD", "UPI"], n_samples),
        "Gender": rng.choice(["Male", "Female"], n_samples),
        "HourSpendOnApp": rng.uniform(0, 5, n_samples).round(1),
        "NumberOfDeviceRegistered": rng.integers(1, 7, n_samples),
        "PreferedOrderCat": rng.choice(["Laptop & Accessory", "Mobile", "Fashion", "Grocery", "Others"], n_samples),
        "SatisfactionScore": rng.integers(1, 6, n_samples),
        "MaritalStatus": rng.choice(["Single", "Married", "Divorced"], n_samples),
        "NumberOfAddress": rng.integers(1, 11, n_samples),
        "Complain": rng.choice([0, 1], n_samples, p=[0.72, 0.28]),
        "OrderAmountHikeFromlastYear": rng.uniform(11, 26, n_samples).round(1),
        "CouponUsed": rng.integers(0, 16, n_samples),
        "OrderCount": rng.integers(1, 16, n_samples),
        "DaySinceLastOrder": rng.integers(0, 46, n_samples),
        "CashbackAmount": rng.uniform(0, 325, n_samples).round(2),
    })

    risk = (
        -0.08 * df["Tenure"]
        + 1.5 * df["Complain"]
        + 0.05 * df["DaySinceLastOrder"]
        - 0.006 * df["CashbackAmount"]
        + 0.6 * (df["MaritalStatus"] == "Single")
        + 0.3 * (df["CityTier"] == 3)
        + rng.normal(0, 0.6, n_samples)
    )

    n_positive = int(round(n_samples * positive_rate))
    churned = np.zeros(n_samples, dtype=int)
    churned[np.argsort(-risk.to_numpy(), kind="stable")[:n_positive]] = 1
    df["Churn"] = churned

    return df
