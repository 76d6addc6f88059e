"""Meeting recording domain -- models, repository, reconciliation, and ingestion.

Holds the durable Meeting record and its derived artifacts, the user
identification resolver, the lifecycle reconciler driven by vendor
webhooks, and the artifact ingestion pipeline run on bot completion.
"""
