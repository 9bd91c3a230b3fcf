"""Stream, patch and archive handling for stemcell builds."""
