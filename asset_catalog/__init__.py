"""BI asset catalog: bulk export, asset index, lineage and field catalog."""
