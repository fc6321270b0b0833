"""ListingHarvester core source package.

This package contains the extraction pipeline components, leaves first:
- proxy: rotating proxy acquisition with locale metadata
- browser / session / locators: stealth Playwright session driving the listing page
- aggregator: intercepted API response reassembly
- selectors / extractor: declarative section extraction from the raw payload
- models / mapper: normalized domain entities
- collaborators / refine: text generation and nearby-attraction enrichment
- persistence: multi-table saga writes with compensation
- pipeline: run boundary converting failures into None/False
- logger / exceptions: structured logging and the error taxonomy
"""

__version__ = "1.0.0"
