# pmcro
# PMCR-O harness: Plan, Make, Check, Reflect.
