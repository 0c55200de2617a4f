"""taskroster - tasks and users with consistent ownership in a document store."""
