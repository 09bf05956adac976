"""Entity registry and field mapping for mirrored Salesforce objects."""
