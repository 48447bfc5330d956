"""Logic-side pieces: Redis data access and publishing, node balancing and configuration."""