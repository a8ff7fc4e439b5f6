# Device-side pieces: durable local queue, HTTP client, offline synchronizer
