"""
Pipeline Module - Item Analysis

This module organizes the analysis of one queued item into discrete stages:
- Identification: vision model names the item and estimates prices
- Market data: comparable sales from eBay
- Pricing engine: blends the two into final price tiers
- Orchestrator: coordinates the stages

Usage:
    from pipeline import AnalysisPipeline
    result = await AnalysisPipeline(identifier, aggregator).analyze(photos)
"""

from .pricing_engine import (
    AnalysisResult,
    combine,
    market_note,
    build_search_query,
    condition_filter_for,
)
from .orchestrator import AnalysisPipeline

__all__ = [
    'AnalysisResult',
    'combine',
    'market_note',
    'build_search_query',
    'condition_filter_for',
    'AnalysisPipeline',
]
