"""Package for provider adapters; it holds no modules yet."""