def validate_settings(settings) -> None:
    if settings.AFFINITY_MIN_EVENTS < 1:
        raise RuntimeError("AFFINITY_MIN_EVENTS must be at least 1")

    if settings.AFFINITY_MAX_VISITORS_PER_RUN < 1 or settings.AFFINITY_MAX_POSTS < 1:
        raise RuntimeError("Affinity batch limits must be positive")

    # 缓存必须覆盖一个完整的调度周期，否则下次运行前就会读到空数据
    if settings.AFFINITY_CACHE_TTL_SECONDS < settings.AFFINITY_INTERVAL_HOURS * 3600:
        raise RuntimeError("AFFINITY_CACHE_TTL_SECONDS must cover AFFINITY_INTERVAL_HOURS")

    if not (0 <= settings.ABANDON_MIN_AGE_MINUTES < settings.ABANDON_MAX_AGE_MINUTES):
        raise RuntimeError("ABANDON_MIN_AGE_MINUTES must be below ABANDON_MAX_AGE_MINUTES")

    if settings.ABANDON_MAX_PER_RUN < 1:
        raise RuntimeError("ABANDON_MAX_PER_RUN must be positive")

    if not (0.0 <= settings.CATEGORY_DISMISS_FACTOR < 1.0):
        raise RuntimeError("CATEGORY_DISMISS_FACTOR must be in [0, 1)")

    if settings.ESCALATING_WEIGHT_CAP <= 0 or settings.ESCALATING_WEIGHT_SCALE <= 0:
        raise RuntimeError("Escalating weight scale and cap must be positive")

    if settings.JOB_LOCK_TTL_SECONDS < 60:
        raise RuntimeError("JOB_LOCK_TTL_SECONDS must be at least 60")
