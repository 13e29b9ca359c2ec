"""blogmigrate - turn legacy blog export records into static-site MDX documents.

Single-record usage::

    from blogmigrate import MigrationConfig, MigrationPipeline, SourceRecord

    pipeline = MigrationPipeline(MigrationConfig())
    record = SourceRecord(title="Hello", raw_body="<p>Hi[footnote]note[/footnote]</p>")
    document = pipeline.transform(record, "hello")
    print(document.body)

Full runs wire the slug mapping, media manifest and downloader from a
config::

    from blogmigrate import build_pipeline, load_records

    report = build_pipeline(config).run(load_records("posts.jsonl"))
"""

from blogmigrate.context import TransformContext
from blogmigrate.emitter import format_document
from blogmigrate.extractors.rules import DEFAULT_RULES, RewriteRule
from blogmigrate.extractors.urlnorm import SlugCanonicalizer, SlugMapping
from blogmigrate.items import OutputDocument, SourceRecord
from blogmigrate.pipeline import MigrationPipeline, MigrationReport, build_pipeline
from blogmigrate.records import load_records
from blogmigrate.settings import MigrationConfig

__version__ = "0.1.0"
__all__ = [
    "DEFAULT_RULES",
    "MigrationConfig",
    "MigrationPipeline",
    "MigrationReport",
    "OutputDocument",
    "RewriteRule",
    "SlugCanonicalizer",
    "SlugMapping",
    "SourceRecord",
    "TransformContext",
    "build_pipeline",
    "format_document",
    "load_records",
]
