"""Video transcoding service with live progress and durable artifact upload."""
