"""Content guard, suspensions, charter acceptance and abuse reports."""
