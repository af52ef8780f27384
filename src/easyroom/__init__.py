"""EasyRoom client-side support packages."""
