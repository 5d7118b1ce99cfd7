"""cetas-tiering: virtualise SQL tables as date-partitioned external Parquet tables."""

__version__ = "1.0.0"
