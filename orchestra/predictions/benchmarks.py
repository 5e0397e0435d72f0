"""Static industry and channel benchmarks used as the forecasting prior.

Rates are percentages, money is in dollars.
"""

from typing import Dict

SUPPORTED_CHANNELS = ("meta", "google", "linkedin", "tiktok", "twitter")

INDUSTRY_BENCHMARKS: Dict[str, Dict] = {
    "general": {
        "objective": "conversions",
        "avg_roi": 120.0, "median_roi": 95.0,
        "avg_ctr": 1.2, "median_ctr": 0.9,
        "avg_cpc": 1.35, "median_cpc": 1.1,
        "conversion_rate": 3.0, "avg_order_value": 70.0,
        "percentiles": {"roi": {"p25": 40.0, "p50": 95.0, "p75": 170.0, "p90": 260.0},
                        "ctr": {"p25": 0.5, "p50": 0.9, "p75": 1.6, "p90": 2.4}},
        "sample_size": 1200,
    },
    "ecommerce": {
        "objective": "conversions",
        "avg_roi": 180.0, "median_roi": 140.0,
        "avg_ctr": 1.6, "median_ctr": 1.3,
        "avg_cpc": 1.1, "median_cpc": 0.95,
        "conversion_rate": 2.8, "avg_order_value": 85.0,
        "percentiles": {"roi": {"p25": 60.0, "p50": 140.0, "p75": 240.0, "p90": 350.0},
                        "ctr": {"p25": 0.8, "p50": 1.3, "p75": 2.1, "p90": 3.0}},
        "sample_size": 3400,
    },
    "saas": {
        "objective": "leads",
        "avg_roi": 150.0, "median_roi": 110.0,
        "avg_ctr": 1.1, "median_ctr": 0.8,
        "avg_cpc": 3.2, "median_cpc": 2.7,
        "conversion_rate": 4.5, "avg_order_value": 240.0,
        "percentiles": {"roi": {"p25": 35.0, "p50": 110.0, "p75": 210.0, "p90": 320.0},
                        "ctr": {"p25": 0.4, "p50": 0.8, "p75": 1.5, "p90": 2.2}},
        "sample_size": 1800,
    },
    "finance": {
        "objective": "leads",
        "avg_roi": 95.0, "median_roi": 70.0,
        "avg_ctr": 0.9, "median_ctr": 0.7,
        "avg_cpc": 4.1, "median_cpc": 3.6,
        "conversion_rate": 5.0, "avg_order_value": 310.0,
        "percentiles": {"roi": {"p25": 20.0, "p50": 70.0, "p75": 140.0, "p90": 210.0},
                        "ctr": {"p25": 0.3, "p50": 0.7, "p75": 1.2, "p90": 1.8}},
        "sample_size": 900,
    },
    "healthcare": {
        "objective": "leads",
        "avg_roi": 85.0, "median_roi": 60.0,
        "avg_ctr": 0.8, "median_ctr": 0.6,
        "avg_cpc": 2.6, "median_cpc": 2.2,
        "conversion_rate": 3.4, "avg_order_value": 180.0,
        "percentiles": {"roi": {"p25": 15.0, "p50": 60.0, "p75": 120.0, "p90": 190.0},
                        "ctr": {"p25": 0.3, "p50": 0.6, "p75": 1.1, "p90": 1.6}},
        "sample_size": 700,
    },
    "education": {
        "objective": "signups",
        "avg_roi": 110.0, "median_roi": 85.0,
        "avg_ctr": 1.3, "median_ctr": 1.0,
        "avg_cpc": 1.8, "median_cpc": 1.5,
        "conversion_rate": 3.8, "avg_order_value": 120.0,
        "percentiles": {"roi": {"p25": 30.0, "p50": 85.0, "p75": 160.0, "p90": 230.0},
                        "ctr": {"p25": 0.6, "p50": 1.0, "p75": 1.7, "p90": 2.5}},
        "sample_size": 650,
    },
}

# Per-channel multipliers applied to the industry rates
CHANNEL_BENCHMARKS: Dict[str, Dict[str, float]] = {
    "meta": {"ctr": 1.0, "cpc": 0.9, "cvr": 1.0},
    "google": {"ctr": 2.4, "cpc": 1.5, "cvr": 1.3},
    "linkedin": {"ctr": 0.5, "cpc": 3.5, "cvr": 1.4},
    "tiktok": {"ctr": 1.3, "cpc": 0.6, "cvr": 0.7},
    "twitter": {"ctr": 0.8, "cpc": 0.7, "cvr": 0.6},
}
DEFAULT_CHANNEL = {"ctr": 1.0, "cpc": 1.0, "cvr": 1.0}


def industry_benchmark(industry: str) -> Dict:
    return INDUSTRY_BENCHMARKS.get((industry or "general").lower(), INDUSTRY_BENCHMARKS["general"])


def channel_benchmark(channel: str) -> Dict[str, float]:
    return CHANNEL_BENCHMARKS.get(channel.lower(), DEFAULT_CHANNEL)
